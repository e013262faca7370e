from setuptools import setup

setup(
    name="ask-system",
    version="1.0",
    py_modules=[
        "main",
        "server",
        "i18n",
        "errors",
        "agent_context",
        "system_info",
        "fallback_table",
        "command_generator",
        "command_executor",
        "result_interpreter",
        "query_resolver",
    ],
    install_requires=[
        "openai>=1.0",
        "requests",
        "psutil",
        "rich",
        "prompt_toolkit",
        "fastapi",
        "pydantic",
        "uvicorn",
    ],
    extras_require={
        "test": ["pytest", "httpx"],
    },
    entry_points={
        "console_scripts": [
            "ask-system=main:main",
            "ask-system-server=server:main",
        ],
    },
)
