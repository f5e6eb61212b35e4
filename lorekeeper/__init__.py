"""LoreKeeper: incremental harvester for MediaWiki-style content APIs."""

__version__ = "0.1.0"
