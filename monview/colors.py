from typing import Dict, Optional

import colored


class Color:
    def __init__(self, fg: str, bg: str = "") -> None:
        # fg/bg are human readable names as defined by 'colored'
        self.fg = fg
        self.bg = bg

        self.style = self.create_style()

    def create_style(self) -> str:
        style = ""

        if self.fg:
            style += colored.fg(self.fg)
        if self.bg:
            style += colored.bg(self.bg)

        return style

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(fg={self.fg}, bg={self.bg})"

    def stylize(self, text: str) -> str:
        return colored.stylize(text, self.style)


class ColorPicker:
    _instance = None

    _error_color = Color(fg="indian_red_1b")
    _warn_color = Color(fg="dark_orange")
    _debug_color = Color(fg="grey_70")
    _trace_color = Color(fg="grey_46")
    _marker_color = Color(fg="white", bg="magenta")

    _severity_colors: Dict[str, Optional[Color]] = {
        "ERROR": _error_color,
        "WARN": _warn_color,
        "INFO": None,
        "DEBUG": _debug_color,
        "TRACE": _trace_color,
    }

    @classmethod
    def get_instance(cls) -> "ColorPicker":
        if cls._instance is None:
            cls._instance = cls()

        return cls._instance

    def get_for_severity(self, severity: str) -> Optional[Color]:
        return self._severity_colors.get(severity.upper())

    def get_marker_color(self) -> Color:
        return self._marker_color

    def get_error_color(self) -> Color:
        return self._error_color
