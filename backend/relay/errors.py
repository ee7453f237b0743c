from __future__ import annotations


class RelayError(Exception):
    pass


class AuthError(RelayError):
    pass


class SecretVerificationError(AuthError):
    pass


class RouteNotFoundError(RelayError):
    pass


class CredentialValidationError(RelayError):
    pass


class UpstreamError(RelayError):
    pass


class RegistrationFailedError(UpstreamError):
    pass


class StorageUnavailableError(RelayError):
    pass
