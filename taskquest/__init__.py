"""TaskQuest: gamified task backend with XP, levels, streaks and achievements"""

__version__ = "1.0.0"
