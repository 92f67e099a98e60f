"""Process manager that runs processes defined in a TOML file."""

__version__ = "0.1.0"