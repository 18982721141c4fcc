"""Community package desk: parcel check-in, resident notification and verified pickup."""

__version__ = "1.0.0"
