"""REST API for TaskQuest"""
