"""Storage location helpers"""
