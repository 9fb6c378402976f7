from .display import SixelDisplay, NullDisplay
from .keyboard import Keyboard, StreamKeyboard, TerminalKeyboard, SerialKeyboard, NO_KEY
