from __future__ import annotations

from html import escape

_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0, maximum-scale=1.0">
  <title>Human Verification</title>
  <script src="https://telegram.org/js/telegram-web-app.js"></script>
  <script src="https://challenges.cloudflare.com/turnstile/v0/api.js" async defer></script>
  <style>
    body {{ font-family: -apple-system, sans-serif; display: flex; align-items: center;
           justify-content: center; min-height: 100vh; margin: 0; background: #f0f2f5; }}
    .container {{ max-width: 400px; padding: 20px; text-align: center; }}
    .user-info {{ font-size: 14px; color: #666; margin-bottom: 24px; }}
  </style>
</head>
<body>
  <div class="container">
    <h1>Human verification</h1>
    <div class="user-info">Telegram user: <b>{name} {user}</b></div>
    <div class="cf-turnstile" data-sitekey="{site_key}" data-callback="onSuccess"></div>
    <div id="msg" style="color: #666; font-size: 14px;">Complete the check above...</div>
  </div>
  <script>
    window.Telegram.WebApp.ready();
    window.Telegram.WebApp.expand();
    function onSuccess(token) {{
      const msg = document.getElementById('msg');
      msg.textContent = 'Submitting...';
      const params = new URLSearchParams(window.location.search);
      const form = new FormData();
      form.append('cf-turnstile-response', token);
      form.append('uid', params.get('uid'));
      form.append('routeId', params.get('routeId') || '');
      fetch('/verify_submit', {{ method: 'POST', body: form }})
        .then(r => r.json())
        .then(data => {{
          if (data.success) {{
            msg.textContent = 'Verified!';
            msg.style.color = 'green';
            window.Telegram.WebApp.close();
          }} else {{
            msg.textContent = 'Verification failed, retrying...';
            msg.style.color = 'red';
            setTimeout(() => location.reload(), 1500);
          }}
        }});
    }}
  </script>
</body>
</html>
"""


def render_challenge_page(*, name: str, user: str, site_key: str) -> str:
    return _TEMPLATE.format(name=escape(name), user=escape(user), site_key=escape(site_key))
