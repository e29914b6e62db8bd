"""
OS keystroke injection for keystroke-mode button bindings.

Bindings store keystrokes as "KEY" or "MOD+MOD+KEY" (e.g. "W",
"CTRL+S", "SHIFT+F1"); they are converted to keyboard hotkey strings.
"""

from typing import Callable, List, Tuple
import logging

import keyboard

logger = logging.getLogger(__name__)

_ALIASES = {
    "CTRL": "ctrl",
    "CONTROL": "ctrl",
    "LCTRL": "left ctrl",
    "RCTRL": "right ctrl",
    "SHIFT": "shift",
    "LSHIFT": "left shift",
    "RSHIFT": "right shift",
    "ALT": "alt",
    "LALT": "left alt",
    "RALT": "right alt",
    "WIN": "windows",
    "ESC": "esc",
    "RETURN": "enter",
    "PGUP": "page up",
    "PGDN": "page down",
    "NUMPAD+": "plus",
    "+": "plus",
}


def _split(keystroke: str) -> Tuple[List[str], str]:
    text = keystroke.strip()
    suffix = ""
    if len(text) > 1 and text.endswith('+'):
        # The key itself ends in '+' ("NUMPAD+", "CTRL++")
        text = text[:-1].rstrip()
        if text.endswith('+'):
            return [p.strip() for p in text[:-1].split('+')], '+'
        suffix = '+'

    modifiers, sep, key = text.rpartition('+')
    parts = [p.strip() for p in modifiers.split('+')] if sep else []
    return parts, key.strip() + suffix


def to_hotkey(keystroke: str) -> str:
    """"CTRL+SHIFT+W" -> "ctrl+shift+w", "CTRL++" -> "ctrl+plus"."""
    modifiers, key = _split(keystroke)
    unknown_plus_key = len(key) > 1 and key.endswith('+') and key.upper() not in _ALIASES
    if not key or not all(modifiers) or unknown_plus_key:
        raise ValueError(f"Invalid keystroke {keystroke!r}")
    return '+'.join(_ALIASES.get(p.upper(), p.lower()) for p in modifiers + [key])


class KeyboardInjector:
    """Presses and releases keys through the keyboard library."""

    def key_down(self, keystroke: str) -> bool:
        return self._execute("down", keyboard.press, keystroke)

    def key_up(self, keystroke: str) -> bool:
        return self._execute("up", keyboard.release, keystroke)

    def tap(self, keystroke: str) -> bool:
        return self._execute("tap", keyboard.send, keystroke)

    def _execute(self, action: str, func: Callable[[str], None], keystroke: str) -> bool:
        try:
            func(to_hotkey(keystroke))
        except Exception as e:
            logger.warning(f"Keystroke {action} failed for {keystroke!r}: {e}")
            return False
        return True
