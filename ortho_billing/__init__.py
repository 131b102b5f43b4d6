"""Orthodontic practice billing service"""
