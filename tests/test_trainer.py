"""
Tests for RankTrainer and TrainedModel

Tests cover:
- Default and explicit configuration
- Setter validation
- End-to-end training scenarios
- Single-query equivalence
- Convergence on separable data
- Determinism with and without worker threads
- Nonnegative weights
- Error conditions
"""

import threading

import numpy as np
import pytest
from scipy.sparse import csr_matrix

from rank_svm import evaluation
from rank_svm.data import RankingDataset, RankingQuery
from rank_svm.exceptions import ConfigurationError, DimensionMismatchError, RankingProblemError
from rank_svm.model import TrainedModel
from rank_svm.optimizer import OptimizerConfig
from rank_svm.oracle import ranking_loss
from rank_svm.trainer import RankTrainer, RankTrainerConfig


def separable_dataset(rng, num_queries=5, per_side=4, dimension=3):
    """Relevant vectors lead nonrelevant ones by >= 2 on the first coordinate."""
    queries = []
    for _ in range(num_queries):
        rel = rng.normal(size=(per_side, dimension))
        nonrel = rng.normal(size=(per_side, dimension))
        rel[:, 0] = rng.uniform(2.0, 3.0, size=per_side)
        nonrel[:, 0] = rng.uniform(-1.0, 0.0, size=per_side)
        queries.append(RankingQuery(relevant=list(rel), nonrelevant=list(nonrel)))
    return RankingDataset(queries)


def noisy_dataset(rng, num_queries=8, dimension=5):
    true_w = rng.normal(size=dimension)
    queries = []
    for _ in range(num_queries):
        x = rng.normal(size=(10, dimension))
        scores = x @ true_w + rng.normal(scale=0.5, size=10)
        order = np.argsort(-scores)
        queries.append(
            RankingQuery(relevant=list(x[order[:3]]), nonrelevant=list(x[order[3:]]))
        )
    return RankingDataset(queries)


class TestTrainerConfiguration:
    """Test trainer construction, getters and setters"""

    def test_defaults(self):
        """Defaults match the documented values"""
        trainer = RankTrainer()
        assert trainer.get_c() == 1.0
        assert trainer.get_epsilon() == 0.001
        assert trainer.get_max_iterations() == 10000
        assert trainer.learns_nonnegative_weights() is False
        assert trainer.is_verbose() is False
        assert trainer.get_num_threads() == 1

    def test_explicit_c(self):
        """Constructor accepts C"""
        assert RankTrainer(5.0).get_c() == 5.0

    @pytest.mark.parametrize("C", [0.0, -1.0])
    def test_invalid_c_in_constructor(self, C):
        """Non-positive C fails before any training"""
        with pytest.raises(ConfigurationError):
            RankTrainer(C)

    def test_invalid_config_object(self):
        """An invalid config dataclass is rejected"""
        with pytest.raises(ConfigurationError):
            RankTrainer(config=RankTrainerConfig(epsilon=0.0))

    def test_setters(self):
        """Setters update their getters"""
        trainer = RankTrainer()
        trainer.set_c(3.0)
        trainer.set_epsilon(1e-5)
        trainer.set_max_iterations(50)
        trainer.set_nonnegative_weights(True)
        trainer.set_num_threads(4)
        trainer.be_verbose()
        assert trainer.get_c() == 3.0
        assert trainer.get_epsilon() == 1e-5
        assert trainer.get_max_iterations() == 50
        assert trainer.learns_nonnegative_weights() is True
        assert trainer.get_num_threads() == 4
        assert trainer.is_verbose() is True
        trainer.be_quiet()
        assert trainer.is_verbose() is False

    @pytest.mark.parametrize(
        "setter,value",
        [
            ("set_c", 0.0),
            ("set_c", -2.0),
            ("set_epsilon", 0.0),
            ("set_epsilon", -1e-3),
            ("set_max_iterations", -1),
            ("set_num_threads", 0),
        ],
    )
    def test_invalid_setter_values(self, setter, value):
        """Invalid values fail at the call site and leave config unchanged"""
        trainer = RankTrainer()
        before = (trainer.get_c(), trainer.get_epsilon(), trainer.get_max_iterations())
        with pytest.raises(ConfigurationError):
            getattr(trainer, setter)(value)
        assert (trainer.get_c(), trainer.get_epsilon(), trainer.get_max_iterations()) == before

    def test_config_is_copied(self):
        """Mutating the passed config does not affect the trainer"""
        config = RankTrainerConfig(C=2.0)
        trainer = RankTrainer(config=config)
        config.C = 100.0
        assert trainer.get_c() == 2.0

    def test_optimizer_settings(self):
        """Optimizer overrides keep trainer-owned fields"""
        trainer = RankTrainer()
        trainer.set_epsilon(0.01)
        trainer.set_optimizer(OptimizerConfig(inactive_plane_threshold=5, epsilon=0.5))
        resolved = trainer.get_optimizer()
        assert resolved.inactive_plane_threshold == 5
        assert resolved.epsilon == 0.01

    def test_invalid_optimizer_settings(self):
        """Invalid optimizer overrides are rejected"""
        with pytest.raises(ConfigurationError):
            RankTrainer().set_optimizer(OptimizerConfig(qp_epsilon=0.0))


class TestTraining:
    """Test end-to-end training"""

    def test_two_vector_scenario(self):
        """Relevant (1,0) scores above nonrelevant (0,1) with defaults"""
        query = RankingQuery(relevant=[[1.0, 0.0]], nonrelevant=[[0.0, 1.0]])
        model = RankTrainer().train(RankingDataset([query]))
        assert model.score([1.0, 0.0]) > model.score([0.0, 1.0])
        np.testing.assert_allclose(model.weights, [0.5, -0.5], atol=0.05)

    def test_single_query_equivalence(self):
        """Training one query equals training the one-element dataset"""
        rng = np.random.default_rng(0)
        query = noisy_dataset(rng, num_queries=1)[0]
        trainer = RankTrainer(2.0)
        from_query = trainer.train(query)
        from_dataset = trainer.train(RankingDataset([query]))
        from_list = trainer.train([query])
        np.testing.assert_array_equal(from_query.weights, from_dataset.weights)
        np.testing.assert_array_equal(from_query.weights, from_list.weights)

    def test_separable_data_converges(self):
        """Shrinking epsilon drives the training risk toward zero"""
        rng = np.random.default_rng(1)
        dataset = separable_dataset(rng)
        C = 100.0
        # w = (0.5, 0, 0) separates every pair with margin 1, so the optimum
        # is at most 0.125 and the risk at any iterate within C * eps of it
        # is at most 0.125 / C + eps.
        for eps in (0.1, 0.01, 0.001, 0.0001):
            trainer = RankTrainer(C)
            trainer.set_epsilon(eps)
            model = trainer.train(dataset)
            risk, _ = ranking_loss(model.weights, dataset)
            assert risk <= 0.125 / C + eps + 1e-12
        result = evaluation.test_ranking_function(model, dataset)
        assert result.ranking_accuracy == 1.0

    def test_learns_noisy_ordering(self):
        """Trained model ranks most training pairs correctly"""
        rng = np.random.default_rng(2)
        dataset = noisy_dataset(rng)
        model = RankTrainer(10.0).train(dataset)
        result = evaluation.test_ranking_function(model, dataset)
        assert result.ranking_accuracy > 0.75

    def test_deterministic(self):
        """Repeated runs give the same weights"""
        rng = np.random.default_rng(3)
        dataset = noisy_dataset(rng)
        trainer = RankTrainer(5.0)
        first = trainer.train(dataset).weights
        second = trainer.train(dataset).weights
        np.testing.assert_array_equal(first, second)

    def test_threads_match_serial(self):
        """Parallel loss evaluation reaches the same model within tolerance"""
        rng = np.random.default_rng(4)
        dataset = noisy_dataset(rng, num_queries=12)
        trainer = RankTrainer(5.0)
        trainer.set_epsilon(1e-5)
        serial = trainer.train(dataset).weights
        trainer.set_num_threads(4)
        parallel = trainer.train(dataset).weights
        again = trainer.train(dataset).weights
        np.testing.assert_allclose(parallel, serial, atol=2e-2)
        np.testing.assert_allclose(again, parallel, atol=1e-9)

    def test_duplicated_dataset_same_tradeoff(self):
        """Doubling every query leaves the normalized problem unchanged"""
        rng = np.random.default_rng(5)
        dataset = noisy_dataset(rng)
        doubled = RankingDataset(list(dataset) + list(dataset))
        trainer = RankTrainer(2.0)
        trainer.set_epsilon(1e-5)
        np.testing.assert_allclose(
            trainer.train(dataset).weights, trainer.train(doubled).weights, atol=2e-2
        )

    @pytest.mark.parametrize("seed", range(4))
    def test_nonnegative_weights(self, seed):
        """Sign constraint holds on arbitrary data"""
        rng = np.random.default_rng(10 + seed)
        dataset = noisy_dataset(rng)
        trainer = RankTrainer(10.0)
        trainer.set_nonnegative_weights(True)
        model = trainer.train(dataset)
        assert np.all(model.weights >= 0)

    def test_nonnegative_two_vector_scenario(self):
        """Sign constraint moves the solution to (1, 0)"""
        query = RankingQuery(relevant=[[1.0, 0.0]], nonrelevant=[[0.0, 1.0]])
        trainer = RankTrainer()
        trainer.set_nonnegative_weights(True)
        model = trainer.train(query)
        np.testing.assert_allclose(model.weights, [1.0, 0.0], atol=0.05)
        assert model.score([1.0, 0.0]) > model.score([0.0, 1.0])

    def test_sparse_vectors(self):
        """Sparse inputs train the same model as dense ones"""
        rng = np.random.default_rng(6)
        dense = noisy_dataset(rng, num_queries=4)
        sparse = RankingDataset(
            RankingQuery(
                relevant=[csr_matrix(np.asarray(v).reshape(1, -1)) for v in q.relevant],
                nonrelevant=[csr_matrix(np.asarray(v).reshape(1, -1)) for v in q.nonrelevant],
            )
            for q in dense
        )
        trainer = RankTrainer(3.0)
        trainer.set_epsilon(1e-6)
        np.testing.assert_allclose(
            trainer.train(dense).weights, trainer.train(sparse).weights, atol=5e-3
        )

    def test_iteration_cap(self):
        """Hitting max_iterations still returns a model"""
        rng = np.random.default_rng(7)
        dataset = noisy_dataset(rng)
        trainer = RankTrainer(100.0)
        trainer.set_epsilon(1e-9)
        trainer.set_max_iterations(2)
        model, result = trainer.train_with_report(dataset)
        assert result.iterations == 2
        assert result.stop_reason == "max_iterations"
        assert model.dimension == dataset.dimension

    def test_concurrent_training(self):
        """One trainer serves several threads"""
        rng = np.random.default_rng(8)
        datasets = [noisy_dataset(rng) for _ in range(3)]
        trainer = RankTrainer(5.0)
        expected = [trainer.train(d).weights for d in datasets]
        results = [None] * len(datasets)

        def run(i):
            results[i] = trainer.train(datasets[i]).weights

        threads = [threading.Thread(target=run, args=(i,)) for i in range(len(datasets))]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        for got, want in zip(results, expected):
            np.testing.assert_array_equal(got, want)

    def test_verbose_logging(self, caplog):
        """Verbose trainer reports progress through logging"""
        query = RankingQuery(relevant=[[1.0, 0.0]], nonrelevant=[[0.0, 1.0]])
        trainer = RankTrainer()
        trainer.be_verbose()
        with caplog.at_level("INFO"):
            trainer.train(query)
        messages = [r.getMessage() for r in caplog.records]
        assert any("Training ranking SVM" in m for m in messages)
        assert any("iteration 1" in m for m in messages)


class TestTrainingErrors:
    """Test precondition failures"""

    def test_empty_dataset(self):
        """Empty dataset fails with a ranking problem error"""
        with pytest.raises(RankingProblemError):
            RankTrainer().train(RankingDataset([]))

    def test_no_pairs(self):
        """Queries missing either side provide no pairs"""
        dataset = RankingDataset(
            [
                RankingQuery(relevant=[[1.0, 0.0]], nonrelevant=[]),
                RankingQuery(relevant=[], nonrelevant=[[0.0, 1.0]]),
            ]
        )
        with pytest.raises(RankingProblemError):
            RankTrainer().train(dataset)

    def test_dimension_mismatch(self):
        """Inconsistent vector sizes are rejected"""
        with pytest.raises(DimensionMismatchError):
            RankTrainer().train(
                [
                    RankingQuery(relevant=[[1.0, 0.0]], nonrelevant=[[0.0, 1.0]]),
                    RankingQuery(relevant=[[1.0, 0.0, 0.0]], nonrelevant=[[0.0, 1.0, 0.0]]),
                ]
            )


class TestTrainedModel:
    """Test the scoring function"""

    def test_score(self):
        """score is the dot product with the weights"""
        model = TrainedModel(np.array([2.0, -1.0]))
        assert model.score([1.0, 1.0]) == pytest.approx(1.0)
        assert model([3.0, 0.0]) == pytest.approx(6.0)

    def test_score_sparse(self):
        """Sparse vectors score the same as dense"""
        model = TrainedModel(np.array([2.0, -1.0, 0.5]))
        assert model.score(csr_matrix([[1.0, 0.0, 2.0]])) == pytest.approx(3.0)

    def test_weights_are_immutable(self):
        """The model owns a read-only copy of its weights"""
        source = np.array([1.0, 2.0])
        model = TrainedModel(source)
        source[0] = 10.0
        assert model.weights[0] == 1.0
        with pytest.raises(ValueError):
            model.weights[0] = 5.0

    def test_dimension_mismatch(self):
        """Scoring a vector of the wrong size fails"""
        with pytest.raises(DimensionMismatchError):
            TrainedModel(np.zeros(2)).score([1.0, 2.0, 3.0])
