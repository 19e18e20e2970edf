"""Service facade and HTTP endpoints"""
