import numpy as np


class Position:
    def __init__(self, x, y, z=0.0):
        self.x = x
        self.y = y
        self.z = z

    def distance(self, other):
        return np.sqrt((self.x - other.x) ** 2 + (self.y - other.y) ** 2 + (self.z - other.z) ** 2)

    def __eq__(self, other):
        return isinstance(other, Position) and (self.x, self.y, self.z) == (other.x, other.y, other.z)

    def __repr__(self):
        return f"Position({self.x}, {self.y}, {self.z})"
