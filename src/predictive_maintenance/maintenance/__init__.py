"""Maintenance scheduling, optimization and analytics"""
