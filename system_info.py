#!/usr/bin/env python3
"""
System Info - structured accessors for common system facts

Every accessor is a pure read of the host's current state and returns plain
dicts/lists so the result can be JSON-serialized as-is.

Sources
───────
• cpu, memory, storage, network, battery, processes → psutil
• os        → platform + /etc/os-release (Linux)
• disk      → /sys/class/block (Linux); psutil partitions elsewhere
• graphics  → lspci, falling back to /sys/bus/pci/devices
"""

import os
import platform
import re
import socket
import subprocess
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional

import psutil

GB = 1024 ** 3

# ── PCI sysfs constants for GPU fallback ──────────────────────────────────────

_PCI_VENDORS = {
    "0x8086": "Intel",
    "0x10de": "NVIDIA",
    "0x1002": "AMD",
    "0x1a03": "ASPEED",
    "0x15ad": "VMware",
    "0x1234": "QEMU/Bochs",
}

_CPU_VENDORS = ("Intel", "AMD", "Apple", "Qualcomm", "ARM", "VIA")

# Partitions, not whole drives: sda1, nvme0n1p1, mmcblk0p1 ...
_PARTITION_RE = re.compile(r"(sd[a-z]+\d+|nvme\d+n\d+p\d+|mmcblk\d+p\d+|hd[a-z]+\d+|vd[a-z]+\d+)$")
_SKIP_BLOCK_PREFIXES = ("loop", "dm-", "md", "ram", "zram", "sr")


def _gb(value: float) -> str:
    return f"{value / GB:.2f} GB"


def _read_text(path: Path) -> str:
    try:
        return path.read_text().strip()
    except OSError:
        return ""


def cpu_model_name() -> str:
    """CPU model string from /proc/cpuinfo, falling back to platform."""
    try:
        with open("/proc/cpuinfo", "r") as f:
            for line in f:
                if line.startswith("model name"):
                    return line.split(":", 1)[1].strip()
    except OSError:
        pass
    return platform.processor() or platform.machine()


def os_release() -> Dict[str, str]:
    """Parse /etc/os-release into a dict (empty off Linux)."""
    release: Dict[str, str] = {}
    try:
        with open("/etc/os-release", "r") as f:
            for line in f:
                line = line.strip()
                if "=" in line:
                    key, _, value = line.partition("=")
                    release[key] = value.strip('"')
    except OSError:
        pass
    return release


class SystemInfoProvider:
    """Typed, read-only accessors for system facts."""

    ACCESSORS = (
        "cpu",
        "memory",
        "disk",
        "storage",
        "network",
        "battery",
        "os",
        "graphics",
        "processes",
    )

    def get(self, name: str) -> Callable[[], object]:
        """Return the accessor method for a name listed in ACCESSORS."""
        if name not in self.ACCESSORS:
            raise KeyError(f"Unknown system info accessor: {name}")
        return getattr(self, name)

    # ── CPU / memory ───────────────────────────────────────────────────────────

    def cpu(self) -> Dict:
        brand = cpu_model_name()
        manufacturer = next(
            (v for v in _CPU_VENDORS if v.lower() in brand.lower()), "unknown"
        )
        freq = psutil.cpu_freq()
        speed = None
        if freq:
            mhz = freq.max or freq.current
            speed = round(mhz / 1000, 2) if mhz else None
        return {
            "manufacturer": manufacturer,
            "brand": brand,
            "speed": f"{speed} GHz" if speed else "unknown",
            "cores": psutil.cpu_count(logical=True),
            "physicalCores": psutil.cpu_count(logical=False),
        }

    def memory(self) -> Dict:
        mem = psutil.virtual_memory()
        return {
            "total": _gb(mem.total),
            "free": _gb(mem.available),
            "used": _gb(mem.total - mem.available),
        }

    # ── Storage ────────────────────────────────────────────────────────────────

    def disk(self) -> List[Dict]:
        """Physical drives; on non-Linux hosts the partition devices."""
        block_base = Path("/sys/class/block")
        if not block_base.exists():
            devices = sorted({p.device for p in psutil.disk_partitions(all=False)})
            return [{"type": "unknown", "name": d, "size": "unknown", "interfaceType": "unknown"}
                    for d in devices]

        drives = []
        for dev_link in sorted(block_base.iterdir()):
            name = dev_link.name
            if name.startswith(_SKIP_BLOCK_PREFIXES) or _PARTITION_RE.match(name):
                continue
            dev = dev_link.resolve()
            sectors = _read_text(dev / "size")
            size_bytes = int(sectors) * 512 if sectors.isdigit() else 0
            if size_bytes <= 0:
                continue

            rotational = _read_text(dev / "queue" / "rotational")
            if name.startswith("nvme"):
                drive_type, interface = "SSD", "NVMe"
            elif name.startswith("mmcblk"):
                drive_type, interface = "eMMC/SD", "MMC"
            elif name.startswith("vd"):
                drive_type, interface = "Virtual disk", "virtio"
            else:
                drive_type = "HDD" if rotational == "1" else "SSD" if rotational == "0" else "unknown"
                interface = "SATA/SCSI"

            model = _read_text(dev / "device" / "model") or name
            drives.append({
                "type": drive_type,
                "name": model,
                "size": _gb(size_bytes),
                "interfaceType": interface,
            })
        return drives

    def storage(self) -> List[Dict]:
        mounts = []
        for part in psutil.disk_partitions(all=False):
            try:
                usage = psutil.disk_usage(part.mountpoint)
            except (PermissionError, OSError):
                continue
            mounts.append({
                "mount": part.mountpoint,
                "size": _gb(usage.total),
                "used": _gb(usage.used),
                "available": _gb(usage.free),
            })
        return mounts

    # ── Network / power ────────────────────────────────────────────────────────

    def network(self) -> List[Dict]:
        stats = psutil.net_if_stats()
        interfaces = []
        for iface, addrs in psutil.net_if_addrs().items():
            iface_stats = stats.get(iface)
            if iface_stats is None or not iface_stats.isup:
                continue
            entry = {"interface": iface, "ip4": "", "ip6": "", "mac": "", "speed": iface_stats.speed}
            for addr in addrs:
                if addr.family == socket.AF_INET and not entry["ip4"]:
                    entry["ip4"] = addr.address
                elif addr.family == socket.AF_INET6 and not entry["ip6"]:
                    entry["ip6"] = addr.address.split("%")[0]
                elif addr.family == psutil.AF_LINK and not entry["mac"]:
                    entry["mac"] = addr.address
            interfaces.append(entry)
        return interfaces

    def battery(self) -> Dict:
        battery = psutil.sensors_battery() if hasattr(psutil, "sensors_battery") else None
        if battery is None:
            return {"hasBattery": False, "isCharging": False, "level": "unknown", "timeRemaining": "unknown"}

        secs = battery.secsleft
        if secs in (psutil.POWER_TIME_UNLIMITED, psutil.POWER_TIME_UNKNOWN) or secs is None or secs < 0:
            remaining = "unknown"
        else:
            remaining = f"{secs // 60} minutes"
        return {
            "hasBattery": True,
            "isCharging": bool(battery.power_plugged),
            "level": f"{round(battery.percent)}%",
            "timeRemaining": remaining,
        }

    # ── OS / graphics / processes ──────────────────────────────────────────────

    def os(self) -> Dict:
        release = os_release()
        uptime_hours = int((time.time() - psutil.boot_time()) // 3600)
        return {
            "platform": platform.system(),
            "distro": release.get("PRETTY_NAME") or f"{platform.system()} {platform.version()}",
            "release": release.get("VERSION_ID") or platform.release(),
            "arch": platform.machine(),
            "uptime": f"{uptime_hours} hours",
        }

    def graphics(self) -> List[Dict]:
        controllers = self._graphics_from_lspci()
        if not controllers:
            controllers = self._graphics_from_sysfs()
        return controllers

    def _graphics_from_lspci(self) -> List[Dict]:
        try:
            result = subprocess.run(["lspci"], capture_output=True, text=True, timeout=3)
        except (OSError, subprocess.TimeoutExpired):
            return []
        if result.returncode != 0:
            return []

        controllers = []
        for line in result.stdout.splitlines():
            low = line.lower()
            if not any(k in low for k in ("vga", "3d controller", "display controller")):
                continue
            desc = line.split(":", 2)[-1].strip().split("(rev")[0].strip()
            vendor = next((v for v in _PCI_VENDORS.values() if v.lower() in desc.lower()), "unknown")
            controllers.append({"model": desc, "vendor": vendor, "vram": self._vram()})
        return controllers

    def _graphics_from_sysfs(self) -> List[Dict]:
        pci_base = Path("/sys/bus/pci/devices")
        if not pci_base.exists():
            return []

        controllers = []
        for dev in sorted(pci_base.iterdir()):
            pci_class = _read_text(dev / "class")
            if not pci_class:
                continue
            try:
                if (int(pci_class, 16) >> 16) != 0x03:  # not a display class
                    continue
            except ValueError:
                continue
            vendor_hex = _read_text(dev / "vendor").lower()
            vendor = _PCI_VENDORS.get(vendor_hex, vendor_hex or "unknown")
            driver = ""
            for ln in _read_text(dev / "uevent").splitlines():
                if ln.startswith("DRIVER="):
                    driver = ln.split("=", 1)[1]
            model = f"{vendor} ({driver})" if driver else f"{vendor} GPU"
            controllers.append({"model": model, "vendor": vendor, "vram": self._vram()})
        return controllers

    @staticmethod
    def _vram() -> str:
        """Dedicated VRAM of the first DRM card exposing it (amdgpu only)."""
        drm_base = Path("/sys/class/drm")
        if not drm_base.exists():
            return "unknown"
        for card in sorted(drm_base.iterdir()):
            total = _read_text(card / "device" / "mem_info_vram_total")
            if total.isdigit():
                return f"{round(int(total) / (1024 ** 2))} MB"
        return "unknown"

    def processes(self) -> Dict:
        counts = {"total": 0, "running": 0, "blocked": 0, "sleeping": 0}
        for proc in psutil.process_iter(["status"]):
            status = proc.info.get("status")
            counts["total"] += 1
            if status == psutil.STATUS_RUNNING:
                counts["running"] += 1
            elif status == psutil.STATUS_DISK_SLEEP:
                counts["blocked"] += 1
            elif status in (psutil.STATUS_SLEEPING, psutil.STATUS_IDLE):
                counts["sleeping"] += 1
        return counts

    # ── Summary for UIs ────────────────────────────────────────────────────────

    def snapshot_fields(self) -> List[Dict[str, str]]:
        """
        Short label/value pairs for the CLI info panel and /system-info.
        A failing source is skipped rather than reported.
        """
        fields: List[Dict[str, str]] = []

        def probe(getter: Callable[[], object]):
            try:
                return getter()
            except Exception:
                return None

        def add(label: str, value: Optional[str]) -> None:
            if value:
                fields.append({"label": label, "value": str(value)})

        os_info = probe(self.os) or {}
        memory = probe(self.memory)
        graphics = probe(self.graphics) or []
        battery = probe(self.battery)

        add("OS", os_info.get("distro"))
        add("Host", platform.node())
        add("Kernel", platform.release())
        add("Uptime", os_info.get("uptime"))
        add("CPU", f"{cpu_model_name()} ({os.cpu_count()} cores)")
        if memory:
            add("Memory", f"{memory['used']} / {memory['total']}")
        add("GPU", ", ".join(g["model"] for g in graphics))
        if battery and battery["hasBattery"]:
            add("Battery", battery["level"])
        return fields
