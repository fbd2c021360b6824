import re
from typing import List, Optional

from agentmon.channels import LEvReceiver
from agentmon.events import Action, LogEvent
from agentmon.tools.terminal import TerminalPrinter
from monview.colors import ColorPicker


class LineAssembler:
    """Chunks do not respect line boundaries, this glues them back together."""

    def __init__(self) -> None:
        self.partial = ""

    def feed(self, text: str) -> List[str]:
        text = self.partial + text
        lines = text.split("\n")
        self.partial = lines.pop()
        return lines

    def flush(self) -> Optional[str]:
        partial, self.partial = self.partial, ""
        return partial or None


class LogDisplay:
    rx_severity = re.compile(r"\[(ERROR|WARN|INFO|DEBUG|TRACE)\]")
    rx_marker = re.compile(
        r"^\.\.\.(changing log level to \w+|reconnecting in \w+ mode)\.\.\.$"
    )

    def __init__(self, printer: Optional[TerminalPrinter] = None) -> None:
        self.printer = printer or TerminalPrinter()
        self.color_picker = ColorPicker.get_instance()
        self.assembler = LineAssembler()

    def format_line(self, line: str) -> str:
        if self.rx_marker.match(line):
            return self.color_picker.get_marker_color().stylize(line)

        match = self.rx_severity.search(line)
        if match:
            color = self.color_picker.get_for_severity(match.group(1))
            if color:
                return color.stylize(line)

        return line

    def show_text(self, text: str) -> None:
        for line in self.assembler.feed(text):
            self.printer.write_line(self.format_line(line))

    def show_event(self, event: LogEvent) -> None:
        if event.action is Action.APPENDED:
            self.show_text(event.object)

        elif event.action is Action.LEVEL_CHANGED:
            self.printer.loudln(f"{event.target.pretty()}: log level is now {event.object}")

        elif event.action is Action.ERROR:
            partial = self.assembler.flush()
            if partial:
                self.printer.write_line(self.format_line(partial))

            color = self.color_picker.get_error_color()
            self.printer.write_line(color.stylize(f"stream stopped: {event.object}"))

    def drain(self, receiver: LEvReceiver, timeout_s: float = 0.05) -> bool:
        "Shows all pending events, returns whether there were any"

        event = receiver.recv(timeout=timeout_s)
        if event is None:
            return False

        while event is not None:
            self.show_event(event)
            event = receiver.recv_nowait()

        return True
