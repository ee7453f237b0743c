from __future__ import annotations

import argparse
import json
import sys
import urllib.error
import urllib.request

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"


def post_json(url: str, body: bytes, headers: dict[str, str]) -> tuple[int, str]:
    request = urllib.request.Request(url, data=body, method="POST")
    request.add_header("Content-Type", "application/json")
    for key, value in headers.items():
        request.add_header(key, value)
    try:
        with urllib.request.urlopen(request, timeout=15) as response:
            content = response.read().decode("utf-8")
            return response.status, content
    except urllib.error.HTTPError as exc:
        return exc.code, exc.read().decode("utf-8")


def build_update(update_id: int, chat_id: int, text: str, reply_to: int | None) -> dict:
    message: dict = {
        "message_id": update_id,
        "chat": {"id": chat_id, "type": "private"},
        "from": {"id": chat_id, "is_bot": False, "first_name": f"Mock {chat_id}"},
        "text": text,
    }
    if reply_to is not None:
        message["reply_to_message"] = {
            "message_id": reply_to,
            "chat": {"id": chat_id, "type": "private"},
        }
    return {"update_id": update_id, "message": message}


def main() -> int:
    parser = argparse.ArgumentParser(description="Send mock Telegram updates to a local relay.")
    parser.add_argument("--base-url", default="http://127.0.0.1:8000")
    parser.add_argument("--route-id", default=None, help="Target /entry/<route-id>; platform bot if omitted.")
    parser.add_argument("--secret", required=True, help="Webhook secret of the target bot.")
    parser.add_argument("--chat-id", type=int, default=555)
    parser.add_argument("--text", default="hello from a mock visitor")
    parser.add_argument("--reply-to", type=int, default=None)
    parser.add_argument("--count", type=int, default=1)
    parser.add_argument("--start-index", type=int, default=1)
    args = parser.parse_args()

    base = args.base_url.rstrip("/")
    endpoint = f"{base}/entry/{args.route_id}" if args.route_id else f"{base}/endpoint"
    for index in range(args.start_index, args.start_index + args.count):
        payload = build_update(index, args.chat_id, args.text, args.reply_to)
        body = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        status_code, response = post_json(endpoint, body, {SECRET_HEADER: args.secret})
        print(f"{status_code} update_id={index} {response}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
