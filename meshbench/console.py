"""
Colored, thread-safe status output.

Per-host tasks run concurrently, so every line goes through one lock.
"""

import sys
import threading

from colorama import Fore, Style, init

init()

print_lock = threading.Lock()


def print_info(message: str) -> None:
    """Print info message in green"""
    with print_lock:
        print(f"{Fore.GREEN}[INFO]{Style.RESET_ALL} {message}")


def print_success(message: str) -> None:
    """Print success message in bright green"""
    with print_lock:
        print(f"{Fore.GREEN}{Style.BRIGHT}[SUCCESS]{Style.RESET_ALL} {message}")


def print_warning(message: str) -> None:
    """Print warning message in yellow"""
    with print_lock:
        print(f"{Fore.YELLOW}[WARNING]{Style.RESET_ALL} {message}")


def print_error(message: str) -> None:
    """Print error message in red"""
    with print_lock:
        print(f"{Fore.RED}[ERROR]{Style.RESET_ALL} {message}", file=sys.stderr)


def print_header(text: str, width: int = 70) -> None:
    """Print a section header."""
    with print_lock:
        print(f"\n{Fore.CYAN}{'=' * width}")
        print(f"{Style.BRIGHT}  {text}{Style.RESET_ALL}")
        print(f"{Fore.CYAN}{'=' * width}{Style.RESET_ALL}\n")


def print_line(message: str = "") -> None:
    """Print a plain line under the shared lock."""
    with print_lock:
        print(message)
