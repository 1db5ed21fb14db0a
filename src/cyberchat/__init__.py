"""cyberchat: streaming chat front end with uncertainty-triggered web search."""

__version__ = "0.1.0"
