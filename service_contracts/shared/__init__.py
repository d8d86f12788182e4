"""Shared helpers - money, time and input validation"""
