from __future__ import annotations


def _split_on_upper(name: str, sep: str) -> str:
    # Every uppercase letter after the first character starts a new word, so
    # runs of capitals are split letter by letter: HTTPHandler -> h-t-t-p-handler.
    out: list[str] = []
    for i, ch in enumerate(name):
        if i > 0 and "A" <= ch <= "Z":
            out.append(sep)
        out.append(ch)
    return "".join(out).lower()


def to_kebab_case(name: str) -> str:
    """CreateAccount -> create-account, list_users -> list-users."""
    return _split_on_upper(name, "-").replace("_", "-")


def to_snake_case(name: str) -> str:
    """CreateAccount -> create_account, chat-service -> chat_service."""
    return _split_on_upper(name, "_").replace("-", "_")
