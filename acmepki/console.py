"""
Console management for acmepki.

Provides the rich-based console used for operator-facing output: step
progress markers, warnings, errors and identity reports.
"""

from collections.abc import Iterator
from contextlib import contextmanager

from rich.console import Console


class ProcessStep:
    """Handle yielded by ``ConsoleManager.process``."""

    def __init__(self) -> None:
        self.failed = False

    def fail(self) -> None:
        """Report the step as KO without raising."""
        self.failed = True


class ConsoleManager:
    """Manages console output and error handling for acmepki."""

    def __init__(self) -> None:
        """Initialize the console manager with stdout and stderr consoles."""
        self.console = Console()
        self.error_console = Console(stderr=True)

    def print(
        self,
        message: str,
        markup: bool = True,
        highlight: bool = False,
        end: str = "\n",
    ) -> None:
        """Print a message to the standard console."""
        self.console.print(message, markup=markup, highlight=highlight, end=end)

    def print_raw(self, message: str, end: str = "") -> None:
        """Print raw output without markup or highlighting."""
        self.console.print(message, markup=False, highlight=False, end=end)

    def print_error(self, message: str, end: str = "\n") -> None:
        """Print an error message to the error console."""
        self.error_console.print(f"[bold red]Error:[/bold red] {message}", end=end)

    def print_warning(self, message: str, end: str = "\n") -> None:
        """Print a warning message to the error console."""
        self.error_console.print(f"[magenta]Warning:[/magenta] {message}", end=end)

    def print_note(
        self, message: str, error: Exception | None = None, end: str = "\n"
    ) -> None:
        """Print a note message to the error console, optionally with an error."""
        if error:
            self.error_console.print(
                f"[yellow]Note:[/yellow] {message}: [red]{error}[/red]", end=end
            )
        else:
            self.error_console.print(f"[yellow]Note:[/yellow] {message}", end=end)

    def print_success(self, message: str) -> None:
        """Print a success message."""
        self.console.print(f"[green]✓[/] {message}")

    def print_title(self, title: str, indent: int = 0) -> None:
        """Print a report section title."""
        self.console.print("\t" * indent + f"[red]{title}[/red] :", highlight=False)

    def print_value(self, value: str, indent: int = 1, label: str | None = None) -> None:
        """Print a report value, optionally prefixed with a label."""
        prefix = "\t" * indent
        if label:
            prefix += f"[yellow]{label}[/yellow] "
        self.console.print(f"{prefix}[blue]{value}[/blue]", highlight=False)

    @contextmanager
    def process(self, line: str) -> Iterator[ProcessStep]:
        """Report a step as it starts and as it concludes.

        Prints ``line...`` and then ``[OK]`` or ``[KO]``. Exceptions raised
        inside the block are always re-raised; ``step.fail()`` marks an
        expected failure without raising.
        """
        step = ProcessStep()
        self.console.print(f"{line}...", markup=False, highlight=False, end="")
        try:
            yield step
        except BaseException:
            self.console.print(r" \[[red]KO[/red]]", highlight=False)
            raise
        if step.failed:
            self.console.print(r" \[[red]KO[/red]]", highlight=False)
        else:
            self.console.print(r" \[[green]OK[/green]]", highlight=False)


# Create global instance for easy import
console_manager = ConsoleManager()
