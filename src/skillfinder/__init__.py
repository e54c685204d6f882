"""SkillFinder - adaptive search over knowledge skill folders."""

__version__ = "0.1.0"
