"""
ANSI helpers used to highlight pipeline milestones in the console log.
"""

_RESET = "\033[0m"
_BOLD = "\033[1m"

_COLORS = {
    "red":     "\033[31m",
    "green":   "\033[32m",
    "cyan":    "\033[36m",
    "orange":  "\033[38;5;208m",
}


def color(text: str, color_name: str, bold: bool = False) -> str:
    """
    Wraps `text` in the ANSI code of `color_name`.

    Unknown color names leave the text untouched.
    """
    if color_name not in _COLORS:
        return text
    prefix = _BOLD if bold else ""
    return f"{prefix}{_COLORS[color_name]}{text}{_RESET}"


def orange(text: str) -> str:
    return color(text, "orange")


def cyan(text: str) -> str:
    return color(text, "cyan")


def bold_green(text: str) -> str:
    return color(text, "green", bold=True)


def bold_red(text: str) -> str:
    return color(text, "red", bold=True)
