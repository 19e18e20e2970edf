"""Failure risk prediction"""
