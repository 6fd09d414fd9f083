from setuptools import setup, find_packages

setup(
    name="hostwatch",
    version="1.0.0",
    description="Real-time host metrics agent, aggregator and stream viewer",
    packages=find_packages(include=["hostwatch", "hostwatch.*"]),
    python_requires=">=3.12",
    install_requires=[
        "pydantic>=2.11.0",
        "python-dotenv>=0.19.0",
        "aiohttp>=3.8.0",    # For HTTP client
        "websockets>=14.1",  # For WebSocket client
        "fastapi>=0.110.0",
        "uvicorn>=0.27.0",
        "psutil>=5.9.0",
        "prometheus-client>=0.19.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.23.0",
            "httpx>=0.27.0",     # For FastAPI TestClient
            "black>=21.0.0",
            "isort>=5.0.0",
        ]
    },
    entry_points={
        "console_scripts": [
            "hostwatch-agent=hostwatch.services.agent.src.main:main",
            "hostwatch-aggregator=hostwatch.services.aggregator.src.main:main",
            "hostwatch-viewer=hostwatch.services.viewer.src.main:main",
        ]
    }
)
