"""
File exchange server
Line-oriented TCP service for listing and uploading text files
"""
