"""
File exchange client
Session driver and command-line front end for the fileshare server
"""
