import sys

import colored
from colored import stylize


class TerminalPrinter:
    def __init__(self, stream=None) -> None:
        self.stream = stream or sys.stdout

    def loudln(self, msg):
        msg = stylize(msg, colored.bg("magenta") + colored.fg("white"))
        self.write_line(msg)

    def write_line(self, msg):
        self.write("%s\n" % msg)

    def write(self, msg):
        self.stream.write(msg)
        self.stream.flush()
