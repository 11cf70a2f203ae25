"""Test package marker so pytest can resolve ``tests.unit`` modules consistently."""
