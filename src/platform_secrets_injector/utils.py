def make_build_version(version: str) -> str:
    """
    Converts a semantic version into the numeric build number
    reported by the CLI, e.g. "1.5.6" -> "1050601".
    """
    parts = version.replace("-beta", "").split(".")
    build_version = parts[0]
    for part in parts[1:]:
        build_version += "0" + part if len(part) == 1 else part
    if len(parts) != 3:
        return build_version
    return build_version + "01"
