"""Parse user ``--model`` strings into attempt descriptors."""

from __future__ import annotations

from summawise.credentials import credential_for_provider, credential_for_tool
from summawise.model_ids import parse_model_id
from summawise.models import (
    AttemptDescriptor,
    GatewayAttempt,
    LocalTool,
    LocalToolAttempt,
    NativeAttempt,
)


def parse_model_spec(raw: str) -> AttemptDescriptor:
    """Turn ``openrouter/...``, ``cli/<tool>[/model]`` or ``provider/model`` into a descriptor.

    Raises ``ValueError`` for anything else.
    """
    text = raw.strip()
    if not text:
        raise ValueError("Model spec must not be empty")
    head, _, rest = text.partition("/")
    head = head.lower()

    if head == "openrouter":
        if not rest:
            raise ValueError(f"Invalid model spec {raw!r}: expected 'openrouter/<provider>/<model>'")
        return GatewayAttempt(user_model_id=text, model_id=rest)

    if head == "cli":
        tool_name, _, tool_model = rest.partition("/")
        try:
            tool = LocalTool(tool_name.lower())
        except ValueError:
            choices = ", ".join(t.value for t in LocalTool)
            raise ValueError(
                f"Unknown local tool {tool_name!r} in {raw!r}. Expected one of: {choices}"
            ) from None
        return LocalToolAttempt(
            user_model_id=text,
            required_credential=credential_for_tool(tool),
            local_tool=tool,
            local_tool_model=tool_model or None,
        )

    parsed = parse_model_id(text)
    credential = credential_for_provider(parsed.provider)
    if credential is None:
        raise ValueError(f"No credential is known for provider {parsed.provider!r}")
    return NativeAttempt(
        user_model_id=parsed.canonical,
        model_id=parsed.canonical,
        required_credential=credential,
        # Z.AI only implements chat completions
        force_chat_completions=parsed.provider == "zai",
    )


def parse_model_specs(raws: list[str]) -> list[AttemptDescriptor]:
    return [parse_model_spec(raw) for raw in raws]
