"""
Linear-Chain CRF Sequence Labeling

A toolkit for training and applying linear-chain conditional random
fields with clique-based feature templates, exact and approximate
decoders, and L-BFGS training with feature pruning.
"""

from .config import (
    CRFConfig,
    load_config
)

from .exceptions import (
    ChainCRFError,
    ConfigurationError,
    DataShapeError,
    CalibrationError
)

from .index import Index

from .preprocessing import (
    Token,
    PaddedView,
    BOUNDARY,
    WORD_SHAPERS,
    word_shape,
    make_document,
    process_document,
    prepare_documents
)

from .readers import (
    ColumnDocumentReader,
    CoNLLDocumentReader,
    make_reader,
    read_documents
)

from .features import (
    Clique,
    FeatureFactory,
    NERFeatureFactory,
    FEATURE_FACTORIES,
    make_feature_factory
)

from .dataset import CRFDatasetBuilder

from .cliquetree import (
    CRFWeights,
    CliqueTree,
    CliqueTreeSequenceModel
)

from .inference import (
    SequenceModel,
    SequenceListener,
    ExactBestSequenceFinder,
    BeamBestSequenceFinder,
    KBestSequenceFinder,
    SequenceGibbsSampler,
    SequenceSampler,
    CoolingSchedule,
    EntityConsistencyPrior,
    PRIORS
)

from .optimization import (
    QNMinimizer,
    SurpriseConvergence
)

from .training import (
    CRFLogConditionalObjectiveFunction,
    train_crf,
    generate_model_id,
    run_kfold_cv
)

from .evaluation import (
    entity_spans,
    evaluate_predictions,
    evaluate_documents,
    print_evaluation_summary,
    compute_cv_summary,
    print_cv_summary
)

from .models import CRFClassifier

__version__ = "0.1.0"
__author__ = "Anonymous"
