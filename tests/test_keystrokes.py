"""
Unit tests for keystroke injection.
"""

import pytest
from unittest.mock import patch

from trainbridge.keystrokes import KeyboardInjector, to_hotkey


class TestToHotkey:
    """Tests for keystroke string conversion."""

    def test_single_key(self):
        assert to_hotkey("W") == "w"

    def test_modifiers(self):
        assert to_hotkey("CTRL+SHIFT+W") == "ctrl+shift+w"
        assert to_hotkey("LALT + F4") == "left alt+f4"

    def test_named_keys(self):
        assert to_hotkey("PGUP") == "page up"
        assert to_hotkey("RETURN") == "enter"

    def test_plus_key(self):
        """A trailing '+' is the key, not a separator."""
        assert to_hotkey("NUMPAD+") == "plus"
        assert to_hotkey("SHIFT+NUMPAD+") == "shift+plus"
        assert to_hotkey("CTRL++") == "ctrl+plus"

    def test_empty_part(self):
        with pytest.raises(ValueError):
            to_hotkey("CTRL+")
        with pytest.raises(ValueError):
            to_hotkey("+W")
        with pytest.raises(ValueError):
            to_hotkey("+")

    @patch("trainbridge.keystrokes.keyboard")
    def test_plus_key_pressed(self, keyboard):
        assert KeyboardInjector().key_down("NUMPAD+") is True
        keyboard.press.assert_called_once_with("plus")


class TestKeyboardInjector:
    """Tests for KeyboardInjector with the keyboard library patched."""

    @patch("trainbridge.keystrokes.keyboard")
    def test_key_down_up(self, keyboard):
        injector = KeyboardInjector()

        assert injector.key_down("CTRL+S") is True
        assert injector.key_up("CTRL+S") is True

        keyboard.press.assert_called_once_with("ctrl+s")
        keyboard.release.assert_called_once_with("ctrl+s")

    @patch("trainbridge.keystrokes.keyboard")
    def test_tap(self, keyboard):
        KeyboardInjector().tap("F5")

        keyboard.send.assert_called_once_with("f5")

    @patch("trainbridge.keystrokes.keyboard")
    def test_failure_reported(self, keyboard):
        """OS errors (e.g. missing permissions) return False."""
        keyboard.press.side_effect = ImportError("You must be root to use this library on linux.")

        assert KeyboardInjector().key_down("W") is False

    @patch("trainbridge.keystrokes.keyboard")
    def test_invalid_keystroke(self, keyboard):
        assert KeyboardInjector().key_down("+") is False
        keyboard.press.assert_not_called()
