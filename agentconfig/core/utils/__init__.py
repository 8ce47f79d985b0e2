"""File locking and atomic write helpers"""
