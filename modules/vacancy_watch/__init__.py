# The runner imports this package and calls run(**kwargs); the CLI calls validate(**kwargs) at startup.
from . import lib  # so: from modules.vacancy_watch import lib
from .main import run, validate  # so: from modules.vacancy_watch import run

__all__ = ["lib", "run", "validate"]
