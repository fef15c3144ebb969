"""Consultations domain - completion and report delivery enqueue"""
