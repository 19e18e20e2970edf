"""Procedure impact, cost and automation trigger rules"""
