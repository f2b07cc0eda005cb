"""Pydantic records for tasks, users and progression"""
