"""nugetkit: NuGet v3 registry client toolkit."""

__version__ = "0.1.0"
