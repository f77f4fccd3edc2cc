class RewardsError(Exception):
    pass


class IdentityCreationFailed(RewardsError):
    pass


class ProfileInsertFailed(RewardsError):
    pass


class RecordNotFound(RewardsError):
    def __init__(self, kind: str, key: object):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} {key} not found")


class DuplicateKey(RewardsError):
    def __init__(self, kind: str, field: str, value: object):
        self.kind = kind
        self.field = field
        self.value = value
        super().__init__(f"{kind} with {field}={value!r} already exists")


class StoreUnavailable(RewardsError):
    pass


class InvalidStateTransition(RewardsError):
    pass


class InvalidCredentials(RewardsError):
    pass


USER_MESSAGES: dict[type, str] = {
    IdentityCreationFailed: "We couldn't create your account. The email may already be registered.",
    ProfileInsertFailed: "Your account could not be set up. Please try again.",
    InvalidCredentials: "Invalid email or password.",
    StoreUnavailable: "The service is temporarily unavailable. Please try again shortly.",
}


def user_message(exc: BaseException) -> str:
    """Human-readable text for known error kinds; anything else passes through verbatim."""
    for kind, message in USER_MESSAGES.items():
        if isinstance(exc, kind):
            return message
    return str(exc)
