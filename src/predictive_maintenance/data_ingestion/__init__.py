"""Collaborator contracts and in-memory adapters"""
