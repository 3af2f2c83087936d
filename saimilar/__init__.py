"""SAImilar - conversational movie and TV recommendations."""

__version__ = "0.1.0"
