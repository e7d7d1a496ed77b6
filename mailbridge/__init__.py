"""MailBridge - an MCP server for reading, organising, analysing and sending email."""

__version__ = "1.0.0"
