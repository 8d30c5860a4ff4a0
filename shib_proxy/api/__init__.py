"""HTTP API Package"""
