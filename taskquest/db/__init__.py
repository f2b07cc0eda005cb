"""Storage backends for tasks and progress"""
