"""Calculator MCP server — basic arithmetic over stdio."""
from mcp.server.fastmcp import FastMCP

mcp = FastMCP("Calculator")


@mcp.tool()
def add(a: float, b: float) -> float:
    """Add two numbers together. Use this tool for addition operations."""
    return a + b


@mcp.tool()
def subtract(a: float, b: float) -> float:
    """Subtract the second number from the first. Use this tool for subtraction operations."""
    return a - b


@mcp.tool()
def multiply(a: float, b: float) -> float:
    """Multiply two numbers together. Use this tool for multiplication operations."""
    return a * b


@mcp.tool()
def divide(a: float, b: float) -> float:
    """Divide the first number by the second. Use this tool for division operations.
    Returns an error if attempting to divide by zero."""
    if b == 0:
        # Reported to the client as an error result
        raise ValueError("Cannot divide by zero")
    return a / b


if __name__ == "__main__":
    mcp.run()
