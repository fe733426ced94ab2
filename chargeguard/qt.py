"""Qt adapter re-emitting device notifications as Qt signals."""

from PyQt5.QtCore import QObject, pyqtSignal

from chargeguard.core.device import BatteryDevice


class DeviceSignalBridge(QObject):
    """Connects to a device and re-emits its notifications for Qt widgets.

    Signals:
        threshold_changed(int, int): start, end
        force_discharge_changed(bool): enabled
        partial_failure(str, str): primary battery, comma-joined failed batteries
    """

    threshold_changed = pyqtSignal(int, int)
    force_discharge_changed = pyqtSignal(bool)
    partial_failure = pyqtSignal(str, str)

    def __init__(self, device: BatteryDevice, parent=None):
        super().__init__(parent)
        self._device = device
        self._handler_ids = (
            device.threshold_changed.connect(self.threshold_changed.emit),
            device.force_discharge_changed.connect(self.force_discharge_changed.emit),
            device.partial_failure.connect(self.partial_failure.emit),
        )

    @property
    def device(self) -> BatteryDevice:
        return self._device

    def detach(self) -> None:
        """Stop forwarding. Safe to call more than once."""
        if self._device is None:
            return
        threshold_id, discharge_id, failure_id = self._handler_ids
        self._device.threshold_changed.disconnect(threshold_id)
        self._device.force_discharge_changed.disconnect(discharge_id)
        self._device.partial_failure.disconnect(failure_id)
        self._device = None
