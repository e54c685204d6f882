"""HTTP interface for SkillFinder."""
