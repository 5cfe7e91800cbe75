"""tally - personal-finance backend with a tool-using chat assistant."""

__version__ = "0.3.0"
