"""Scheduling domain - tenant resolution, conflict detection and booking"""
