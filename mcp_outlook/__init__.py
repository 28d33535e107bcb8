"""
Outlook MCP Module
Microsoft Graph 기반 Outlook 도구 서버 (어댑터, 도구, 디스패처)
"""

__version__ = '1.0.0'
