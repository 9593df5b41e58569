"""Text patches for config.txt and cmdline.txt."""

from flightflasher.provisioning.layout import TRIGGER_TOKENS

AUDIO_KEY = "dtparam=audio="
AUDIO_OFF = "dtparam=audio=off"


def disable_onboard_audio(text: str) -> str:
    """Turn the onboard audio directive off.

    Every existing `dtparam=audio=` line is rewritten in place, so directives
    under conditional sections such as `[pi4]` or `[cm5]` keep their position.
    A directive is appended only when the file has none.
    """
    patched = []
    found = False
    for line in text.splitlines():
        stripped = line.lstrip()
        if stripped.startswith(AUDIO_KEY):
            patched.append(line[: len(line) - len(stripped)] + AUDIO_OFF)
            found = True
            continue
        patched.append(line)
    if not found:
        patched.append(AUDIO_OFF)
    return "\n".join(patched) + "\n"


def count_boot_triggers(cmdline: str) -> int:
    """Number of complete trigger sequences on the command line."""
    tokens = cmdline.split()
    width = len(TRIGGER_TOKENS)
    return sum(
        1 for i in range(len(tokens) - width + 1) if tuple(tokens[i : i + width]) == TRIGGER_TOKENS
    )


def remove_boot_trigger(cmdline: str) -> str:
    """Strip every trigger token, keeping the rest as one line."""
    tokens = [token for token in cmdline.split() if token not in TRIGGER_TOKENS]
    return " ".join(tokens) + "\n"


def append_boot_trigger(cmdline: str) -> str:
    """Join the file onto one line and append exactly one trigger."""
    base = remove_boot_trigger(cmdline).strip()
    return " ".join([base, *TRIGGER_TOKENS]).strip() + "\n"
