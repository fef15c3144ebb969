"""Notifications domain - in-app notifications and their advisory emails"""
