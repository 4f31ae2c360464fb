"""queryprep - offline query metadata preparation for compile-time checked SQL."""

__version__ = "0.3.0"
